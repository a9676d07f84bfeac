"""python -m taskweave.worker"""

from .main import main

main()
