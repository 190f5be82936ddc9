"""
Contracts (data models).

This folder defines the request/response shapes for quote creation and
external pricing. Both the simulated and the real HTTP pricing clients
return ``PricingResult``; the HTTP layer and the idempotency cache only ever
see ``Quote`` bodies.
"""
