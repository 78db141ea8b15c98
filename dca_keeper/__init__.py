"""Off-chain keeper for a recurring DCA protocol on Sui."""

__version__ = "0.1.0"
