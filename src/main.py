"""
Main entry point for the key/value server.
Resolves the configuration, detaches unless --foreground is given, and runs
the HTTP server until it is asked to stop.
"""

import sys

from lifecycle.supervisor import LifecycleSupervisor
from server.kv_server import KVServer


def main(argv=None) -> int:
    """Main function to start the server"""
    supervisor = LifecycleSupervisor(KVServer)
    return supervisor.run(sys.argv[1:] if argv is None else argv)


if __name__ == '__main__':
    sys.exit(main())
