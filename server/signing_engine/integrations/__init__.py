"""
Outbound integrations for the signing engine.
"""
