"""LC-2K debugger front ends."""
