"""listings/ -- Properties, images, reviews, favorites and the region/comuna lookups.

Layer rule: listings/ imports only core/ and third-party libraries.
"""
