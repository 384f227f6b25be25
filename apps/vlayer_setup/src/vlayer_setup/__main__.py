from vlayer_setup.cli import main

raise SystemExit(main())
