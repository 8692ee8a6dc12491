"""
The MODEL layer contains pure data structures and business logic.
It has NO knowledge of the GUI (Qt) or the plots (Matplotlib).
It deals with stages, castings, validation and I/O.
"""
