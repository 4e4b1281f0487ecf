"""Order and payment lifecycle core of a multi-store e-commerce backend."""
