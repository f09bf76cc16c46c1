"""Broker Market Analysis (BMA) calculator backend."""
