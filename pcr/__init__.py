"""Proxy Config Reconciler (PCR).

Sidecar that keeps a reverse proxy's configuration in step with the
containers running on the host:
 - snapshots the docker runtime into a weighted service topology
 - renders configuration templates and writes them only when they change
 - starts, reloads and stops the proxy process
 - turns OS signals into events for a single-threaded loop
"""
