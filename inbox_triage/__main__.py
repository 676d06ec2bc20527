from inbox_triage.cli import main

raise SystemExit(main())
