"""Push notification delivery.

Resolves an owner's registered device tokens, sends one FCM multicast
request and prunes tokens the backend reports as permanently invalid.
"""
