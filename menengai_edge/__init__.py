"""
Menengai Edge - tenant resolution, storefront routing and session guard
"""
__version__ = "1.0.0"
