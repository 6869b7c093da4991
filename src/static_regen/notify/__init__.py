"""External webhook notification after successful builds."""
