"""
Subscription Revenue Analytics
"""
