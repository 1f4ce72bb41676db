"""
Docket RTLS Core Package.

Real-time locating of passive RFID tags inside a building and guided
search for a single tagged docket.

Package structure:
- io: Reader gateway contract, simulator, collaborators, bounded event queue
- proto: Message schemas (tag reads, reader descriptors, position estimates)
- localization: Path-loss ranging, trilateration, fingerprinting, Kalman smoothing
- domain: Finding sessions, Geiger feedback, navigation, alert checks
- tracking: Orchestrator owning shared state and the periodic cycles
- metrics: Diagnostics, counters, histograms
"""

__version__ = "0.1.0"
__author__ = "Docket RTLS Team"
