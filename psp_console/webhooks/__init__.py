"""PSP webhook receiver.

Each webhook is signature-verified, then kept in a bounded inbox for
operator inspection.
"""
