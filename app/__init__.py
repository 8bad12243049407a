"""Car detailing booking API backed by Square"""
