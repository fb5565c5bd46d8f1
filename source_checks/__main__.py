from source_checks.main import main


raise SystemExit(main())
