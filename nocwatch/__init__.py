"""Server-room telemetry sampling, push feed and threshold alerts."""
