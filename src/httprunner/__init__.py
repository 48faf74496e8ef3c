"""httprunner -- Run one preconfigured command over HTTP(S).

A remote caller triggers the command, gets its early output streamed back on
the same request, and can later list or kill the instances still running.
The command itself is fixed when the server starts.
"""

__version__ = "0.1.0"
