"""
Colors used for console output.
"""

from colorama import Fore, Style

THEME = {
    "info": Fore.WHITE + Style.DIM,
    "success": Fore.GREEN,
    "warning": Fore.YELLOW,
    "error": Fore.RED,
    "metadata": Fore.WHITE + Style.DIM,
}
