"""Delivery transports (push, email, in-app) behind one routing gateway."""
