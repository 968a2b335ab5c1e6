"""
Services Package

Long-running pieces built on the account core:
- PositionService: the service object the HTTP layer talks to
- FetchScheduler: drives fetch passes at a fixed interval
"""
