"""Ingress Target Prober (ITP).

Long-running controller that:
 - probes a fixed list of backend IPs over HTTP(S)
 - publishes the healthy ones as an annotation on Kubernetes Ingress objects
   (by default the external-dns target annotation)
 - leaves annotations alone when nothing is healthy

The implementation is intentionally small so it can be audited and explained.
"""
