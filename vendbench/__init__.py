"""Vending machine benchmark with delegated workers and simulated suppliers."""
