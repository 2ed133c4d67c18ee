"""
Tiffin meal-subscription backend.

Daily order generation for active subscribers and the order delivery
lifecycle (preparation, dispatch, delivery confirmation, skip and cancel)
with subscription credit accounting.
"""

__version__ = "1.0.0"
