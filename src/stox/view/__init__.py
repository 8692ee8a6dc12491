"""
The VIEW layer adapts the model to Qt item views and Matplotlib figures.
"""
