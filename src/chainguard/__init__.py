"""chainguard - iptables chain manager for IP whitelists and blacklists.

Maintains one dedicated filter chain populated from an IP list, hooks it
into INPUT for a configured set of ports and protocols, snapshots the
firewall before every change and reports status.
"""

__version__ = "1.0.0"
__author__ = "chainguard maintainers"
