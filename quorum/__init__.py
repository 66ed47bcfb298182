"""
Quorum - reactive sync core for the Quorum forum client.

  store        - document store contract, in-memory and Postgres adapters
  models       - pydantic shapes for posts, comments, auth
  kernel       - pure read path: parsing and the view-state reducer
  services     - live queries, mutations, the "my comments" join
  controllers  - one per screen; own a ViewState and a subscription
"""

__version__ = "0.1.0"
