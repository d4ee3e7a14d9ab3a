"""
Shipping module

Carrier adapters, status normalization and the shipment state machine.
"""
