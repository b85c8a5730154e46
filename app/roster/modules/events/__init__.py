"""
Events (read model).

Only what membership rules need: events, their dates and who participates.
The cleanup finder keeps everyone who takes part in an upcoming event.
"""
