__codename__ = "CONTILOOP"
__version__ = "0.3.0"
__tagline__ = "Propose. Validate. Integrate. Repeat."

BANNER = r"""
   ___ ___  _  _ _____ ___ _    ___   ___  ___
  / __/ _ \| \| |_   _|_ _| |  / _ \ / _ \| _ \
 | (_| (_) | .` | | |  | || |_| (_) | (_) |  _/
  \___\___/|_|\_| |_| |___|____\___/ \___/|_|
"""
