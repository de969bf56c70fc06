# Package initializer for the study-space availability backend.

"""
The `roomspots` package contains all modules for the campus study-space backend.

Modules:

- ``config``: application settings loaded from environment variables.
- ``clock``: civil time zone normalisation (weekday and minute-of-day).
- ``hours``: operating-hours parsing and open/closed evaluation.
- ``terms``: academic term resolution.
- ``occupancy``: per-room occupancy against scheduled events.
- ``models``: Pydantic data models for catalog rows and API responses.
- ``gateway``: the remote catalog gateway and its PostgREST client.
- ``store``: the SQLite replica of the remote catalog.
- ``cache``: the cache synchronizer keeping the replica fresh.
- ``catalog``: live paging and favorites against the remote catalog.
- ``main``: the FastAPI application definition.

"""
