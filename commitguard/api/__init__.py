"""HTTP ingress for CommitGuard."""
