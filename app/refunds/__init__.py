"""
Refund reconciliation engine.

Looks up a payment at an external gateway, initiates a refund, and durably
records the outcome of every attempt, whether it succeeds, fails, settles
partially, or is still pending at the gateway.
"""
