"""Flash-loan leveraged position calculation and step assembly engine."""
