"""Stablecoin off-ramp service."""
