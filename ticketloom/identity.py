"""
ticketloom identity — name, version and banner shared by the CLI.
"""

__codename__ = "ticketloom"
__version__ = "0.4.0"
__tagline__ = "Many tickets, one loom, no tangles."

BANNER = r"""
  _   _      _        _   _
 | |_(_) ___| | _____| |_| | ___   ___  _ __ ___
 | __| |/ __| |/ / _ \ __| |/ _ \ / _ \| '_ ` _ \
 | |_| | (__|   <  __/ |_| | (_) | (_) | | | | | |
  \__|_|\___|_|\_\___|\__|_|\___/ \___/|_| |_| |_|
"""
