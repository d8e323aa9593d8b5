"""Pure domain logic for the order kernel: accounting, clock, DTOs."""
