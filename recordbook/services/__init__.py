"""Record Book services.

- Audit Service: append-only trail of grade and absence mutations with
  integrity checksums, history reconstruction and statistics
"""
