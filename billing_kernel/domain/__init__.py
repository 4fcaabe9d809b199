"""Pure domain layer: periods, deadlines, pricing, validation and DTOs."""
