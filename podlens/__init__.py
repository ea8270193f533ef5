"""
Podlens - Multi-pod Kubernetes log viewer.

Podlens tails and fetches logs from one or more Kubernetes pods, merges the
lines into a single ordered buffer, parses them into structured entries and
renders them as raw text or as a sortable table with timezone-aware timestamps.

Key Features:
- Live log streaming from several pods over a single connection
- Historical fetches over a time window (5m, 1h, 2d) or from the previous container
- Control-code stripping and tolerant line parsing
- Raw and table views with auto-scroll
- Export to txt, json and csv

Example:
    Serve the viewer API:
    ```bash
    podlens serve --namespace prod
    ```

    Tail pods matching a pattern in the terminal:
    ```bash
    podlens tail --pod '^api-' --namespace prod
    ```

    Export the last hour of logs:
    ```bash
    podlens fetch --pod '^api-' --since 1h --format csv --output api.csv
    ```
"""

__all__ = ["__version__"]
__version__ = "0.1.0"
