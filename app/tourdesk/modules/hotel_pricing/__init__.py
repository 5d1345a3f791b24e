"""
Hotel pricing bulk import (.xlsx / .csv upload).
"""
