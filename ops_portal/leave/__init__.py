"""Leave requests, approval chains and the balance ledger."""
