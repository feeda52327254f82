"""Prometheus exporter for PgBouncer.

Submodules
----------
auth
    Basic-auth gate for every route.
registry
    Producer registry with partial-failure rendering.
pgbouncer
    Admin-console statistics producer.
process
    Resource usage of the PgBouncer process.
build_info
    Version banner and build-info metric.
app, server, cli
    HTTP application, listener and command line.
"""
