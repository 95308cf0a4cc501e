"""
Handlers package - Contains the Kopf event handlers of the PKI operator.

- pki.py: PKI reconciliation of watched cluster resources
"""
