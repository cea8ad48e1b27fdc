"""
Primary-system inventory mirror.

Models:
- PrimaryItem (POS item record, one row per item per location)
- StockMutation (append-only increase/decrease/transfer records)
- MutationSync (delivery state of each mutation to the primary system)
"""
