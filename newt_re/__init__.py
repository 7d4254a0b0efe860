"""NewtonScript bytecode reverse engineering toolkit."""

__version__ = "0.1.0"
