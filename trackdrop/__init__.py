"""TrackDrop - collaborative playlist bot for Spotify

Appends tracks shared in a chat channel to a collaborative playlist and
rebuilds a discovery playlist from recent additions on a weekly schedule.
"""

__version__ = "1.0.0"
__author__ = "TrackDrop Contributors"
