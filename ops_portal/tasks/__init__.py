"""Tasks, assignment history and single-round approval."""
