"""Flow metrics context for account requests.

Flow identifiers are self-verifying (HMAC over their random and time
components), so validating one needs only the shared flow key.
"""
