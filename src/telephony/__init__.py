"""Real-time media components for call bridging.

Each call holds two peer connections: the telephony leg toward the calling
service and the browser leg toward the operator console. Audio received on one
leg is relayed out of the other.
"""
